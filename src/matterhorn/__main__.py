import sys

from matterhorn.cli import main

sys.exit(main())
