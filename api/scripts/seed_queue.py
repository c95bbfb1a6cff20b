import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from matchmaker.database import Base, SessionLocal, engine
from matchmaker.services.seeding import seed_queue
from matchmaker.wiring import build_services


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the matchmaking queue with random profiles")
    parser.add_argument("--n-users", type=int, default=20)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--prefix", type=str, default="seed")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    services = build_services(SessionLocal)
    summary = seed_queue(services.queue, n_users=args.n_users, seed=args.seed, prefix=args.prefix)

    print("Seed completed")
    for k, v in summary.items():
        print(f"- {k}: {v}")


if __name__ == "__main__":
    main()
