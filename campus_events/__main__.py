import sys

from campus_events.ingestion.entrypoint import main

if __name__ == "__main__":
    sys.exit(main())
