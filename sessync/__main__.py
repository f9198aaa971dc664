from sessync.cli import main

main()
