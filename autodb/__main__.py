import sys

from autodb.cli import main


sys.exit(main())
