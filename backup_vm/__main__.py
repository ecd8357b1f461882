import sys

from backup_vm.main import main

sys.exit(main())
