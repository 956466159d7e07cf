"""
WSGI entry point for deployment
Imports the Flask app from main.py and exposes it for any WSGI server
"""
from main import app

if __name__ == "__main__":
    app.run()
