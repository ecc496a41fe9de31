from __future__ import annotations

import json

from contact_engine.core.logging import configure_logging
from contact_engine.db.pg.store import SqlContactStore
from contact_engine.workers.jobs import attribute_all_contacts, enhance_all_events


def main() -> None:
    configure_logging()
    store = SqlContactStore()
    enhancement = enhance_all_events(store)
    run = attribute_all_contacts(store)
    if not run.report.processed:
        print("No contacts found")
        return
    summary = {
        "enhancement": enhancement.model_dump(mode="json"),
        "attribution": run.report.model_dump(mode="json"),
    }
    print(json.dumps(summary, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
