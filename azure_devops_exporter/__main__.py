import sys

from azure_devops_exporter.main import main

sys.exit(main())
