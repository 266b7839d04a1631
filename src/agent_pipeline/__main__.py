from agent_pipeline.cli import main

raise SystemExit(main())
