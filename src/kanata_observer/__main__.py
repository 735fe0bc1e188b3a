from kanata_observer.cli import main

raise SystemExit(main())
