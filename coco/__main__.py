import sys

from coco.main import main

sys.exit(main())
