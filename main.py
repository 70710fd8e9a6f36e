# Entry point so `uvicorn main:app` serves the form builder API from the project root.
from formbuilder.app import app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
