from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.services.bootstrap import build_components
from app.workers import MaintenanceWorker


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    MaintenanceWorker(build_components(settings)).run_forever()


if __name__ == "__main__":
    main()
