import argparse
import json
import logging
import sys
import threading
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fastapi.encoders import jsonable_encoder

from matchmaker.config import LOG_LEVEL, MATCHMAKING_INTERVAL_SECONDS
from matchmaker.database import Base, SessionLocal, engine
from matchmaker.wiring import build_services


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the matchmaking pass once or on a fixed interval")
    parser.add_argument("--once", action="store_true", help="run a single pass and print the pairings")
    parser.add_argument("--interval", type=float, default=MATCHMAKING_INTERVAL_SECONDS)
    parser.add_argument("--stats", action="store_true", help="print queue statistics after a single pass")
    args = parser.parse_args()

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    Base.metadata.create_all(bind=engine)
    services = build_services(SessionLocal, interval_seconds=args.interval)

    if args.once:
        created = services.scheduler.tick() or []
        print(json.dumps(jsonable_encoder({"created": len(created), "pairings": created}), indent=2))
        if args.stats:
            print(json.dumps(jsonable_encoder(services.stats.queue_statistics()), indent=2))
        return

    stop = threading.Event()
    try:
        services.scheduler.run_forever(stop)
    except KeyboardInterrupt:
        stop.set()


if __name__ == "__main__":
    main()
