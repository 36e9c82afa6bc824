import sys
import os

# Get the directory where this script is located (project root)
script_dir = os.path.dirname(os.path.abspath(__file__))

# Add the script directory to Python path so 'crowdledger' can be found
if script_dir not in sys.path:
    sys.path.insert(0, script_dir)

os.chdir(script_dir)

import uvicorn

if __name__ == "__main__":
    # String form so reload can re-import crowdledger.main:app
    uvicorn.run(
        "crowdledger.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        reload_dirs=[script_dir],
        reload_includes=["*.py"]
    )
