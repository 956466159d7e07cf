"""
Run the report service with Waitress WSGI server (production-grade, no reloader issues)
"""
import os

from waitress import serve
from main import app

if __name__ == '__main__':
    print("\n" + "="*70)
    print("Starting Overlap Report Engine with Waitress WSGI Server")
    print("No reloader - code changes require manual restart")
    print("="*70 + "\n")

    # Each report holds a worker for up to four completion calls
    serve(app, host='0.0.0.0', port=int(os.getenv('PORT', '5000')), threads=int(os.getenv('WAITRESS_THREADS', '4')))
