import os

import uvicorn

from ledger_workload.logging_config import setup_logging


def main():
    setup_logging()
    uvicorn.run(
        "ledger_workload.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        lifespan="on",
        log_config=None,
    )


if __name__ == "__main__":
    main()
