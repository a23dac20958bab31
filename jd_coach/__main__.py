"""Allow running as: python -m jd_coach"""

import sys

from jd_coach.main import main

if __name__ == "__main__":
    sys.exit(main())
