from handoff.execution.cli import main

main()
