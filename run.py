"""Development server for the taskgrid API.

Usage:
    python run.py
    FLASK_ENV=production python run.py

Maintenance jobs (reindexing, rollups, archiving) are Flask CLI commands:
    flask --app run rebuild-search-vectors
    flask --app run aggregate-activity --period-type day
"""

import os

from dotenv import load_dotenv

load_dotenv()  # .env must be loaded before config classes read os.environ

from taskgrid import create_app

app = create_app()

if __name__ == "__main__":
    app.run(
        debug=app.config.get("DEBUG", False),
        host=os.environ.get("TASKGRID_HOST", "127.0.0.1"),
        port=int(os.environ.get("TASKGRID_PORT", "5001")),
    )
