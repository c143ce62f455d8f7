from __future__ import annotations

import argparse
from pathlib import Path

from stack_provisioner.config import apply, load, plan


def _progress(change: object, event: str) -> None:
    label = getattr(change, "label", "unknown")
    if event == "start":
        print(f"[apply:start] {label}")
    else:
        print(f"[apply:done]  {label}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply a stack via the Python API")
    parser.add_argument("--config", default="stack.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Skip refresh during plan",
    )
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config, refresh=not args.no_refresh)
    print("Plan summary:", plan_obj.summary())
    for change in plan_obj.changes:
        reasons = f" ({', '.join(change.reasons)})" if change.reasons else ""
        print(f"- {change.action.value:7} {change.label}{reasons}")

    if args.apply:
        result = apply(plan_obj, config, progress=_progress)
        print("Apply summary:", result.summary())


if __name__ == "__main__":
    main()
