# Makes `import voxforge` work when the package lives under `backend/`
import sys, os
from pathlib import Path
ROOT = Path(__file__).resolve().parent
PKG_DIR = ROOT / "backend"
if str(PKG_DIR) not in sys.path:
    sys.path.insert(0, str(PKG_DIR))

# Default to test env; tests must mock vendors
os.environ.setdefault("APP_ENV", "test")
