"""Write interfaces/openapi.json, adding the WebSocket feed as an extension."""
import json
import os

from src.api.main import app
from src.api.routes.health import websocket_info

openapi_schema = app.openapi()
openapi_schema["x-websocket-endpoints"] = websocket_info()["endpoints"]

output_dir = "interfaces"
os.makedirs(output_dir, exist_ok=True)

with open(os.path.join(output_dir, "openapi.json"), "w") as f:
    json.dump(openapi_schema, f, indent=2)
