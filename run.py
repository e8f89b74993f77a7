"""Development server for the pipeline API.

Usage:
    python run.py

Reads .env first, so DATABASE_URL and the territory map settings apply.
PORT and FLASK_DEBUG override the defaults below.
"""

import os

from dotenv import load_dotenv

load_dotenv()

from crm import create_app

app = create_app()

if __name__ == "__main__":
    app.run(
        debug=os.environ.get("FLASK_DEBUG", "1") == "1",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5001)),
    )
