from flapburn.cli import main

main()
