"""
Serverless entry point for the FleetDesk STS API
"""
import os
import sys

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

os.environ.setdefault("ENVIRONMENT", "production")

from mangum import Mangum
from fleetdesk.main import app

# Lambda handler for the ASGI app; the lifespan initializes the database
handler = Mangum(app, lifespan="auto")
