#!/usr/bin/env python3
import os, sys, shutil, traceback

def ok(msg): print("[OK] " + msg)
def warn(msg): print("[WARN] " + msg)
def fail(msg): print("[FAIL] " + msg); sys.exit(1)

# 1) OpenCV and scikit-learn
try:
    import cv2  # noqa
    ok(f"OpenCV {cv2.__version__} import is available")
except Exception:
    traceback.print_exc()
    fail("OpenCV not available. Install via: pip install opencv-python-headless")

try:
    import sklearn  # noqa
    ok(f"scikit-learn {sklearn.__version__} import is available")
except Exception:
    traceback.print_exc()
    fail("scikit-learn not available. Install via: pip install scikit-learn")

# 2) ffmpeg / ffprobe
for tool in ("ffmpeg", "ffprobe"):
    if shutil.which(tool):
        ok(f"{tool} found in PATH")
    else:
        fail(f"{tool} not found in PATH. Install via: brew install ffmpeg (or your package manager)")

# 3) Service folders
base = os.path.abspath(os.environ.get("SIEVE_BASE_DIR", "."))
for sub in ("logs", "data", "scenes"):
    os.makedirs(os.path.join(base, sub), exist_ok=True)
ok(f"Folders ensured at {base}")

if not os.environ.get("SIEVE_SERVICE_URL"):
    warn("SIEVE_SERVICE_URL not set; sieve_run.py will run locally")

print("\nEnvironment check passed")
