#!/usr/bin/env python3
"""
Deployment entry point: exposes the catalog API app at the repository root.
"""

import os

from addon_catalog.main import app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "5000")))
