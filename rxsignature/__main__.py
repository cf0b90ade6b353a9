from rxsignature.cli import main

raise SystemExit(main())
