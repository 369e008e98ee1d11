from __future__ import annotations

import argparse
import json
import sys


def _bootstrap_app():
    from homecheff import create_app

    app = create_app()
    app.app_context().push()
    return app


def main():
    parser = argparse.ArgumentParser(description="Retry transfers for escrows stuck in payout_scheduled.")
    parser.add_argument("--limit", type=int, default=100, help="Maximum escrows to retry in this run.")
    args = parser.parse_args()

    _bootstrap_app()
    from homecheff.jobs.payout_runner import run_payout_reconciliation

    summary = run_payout_reconciliation(limit=max(1, min(int(args.limit), 500)))
    print(json.dumps(summary, indent=2))
    return 0 if int(summary.get("errors") or 0) == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
