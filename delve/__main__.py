import sys
import traceback


def main() -> None:
    try:
        from delve import delve_main

        sys.exit(delve_main.main())
    except SystemExit:
        raise
    except Exception as exc:
        sys.stderr.write(f"ERROR: Calling Delve main function failed: {exc}\n")
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
