from vsco_archive.scraper.cli import main

if __name__ == "__main__":
    # Same entry point as the installed ``vsco-archive`` console script.
    raise SystemExit(main())
