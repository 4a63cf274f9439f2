import os
import tempfile

# Keep progress state and the attempt log out of the working tree.  Set before
# any test module imports ``progress``; spawned workers inherit the env.
_STATE_DIR = tempfile.mkdtemp(prefix="seat_planner_tests_")
os.environ.setdefault("PROGRESS_STATE_FILE", os.path.join(_STATE_DIR, "progress_state.json"))
os.environ.setdefault("PROGRESS_LOG_FILE", os.path.join(_STATE_DIR, "solver_attempts.log"))
