"""
Medinet AI Doctor Server — Entry Point
"""
import platform

import uvicorn

from medinet import settings

if __name__ == "__main__":
    port = settings.PORT

    if platform.system() == "Windows":
        uvicorn.run("medinet.app:app", host="0.0.0.0", port=port, log_level="info", loop="asyncio")
    else:
        uvicorn.run("medinet.app:app", host="0.0.0.0", port=port, log_level="info")
