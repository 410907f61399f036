import sys

from cvd2img.main import main

if __name__ == "__main__":
    sys.exit(main())
