from ssh_fb.main import main

raise SystemExit(main())
