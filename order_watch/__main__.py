from order_watch.cli import main

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
