from turnloop.cli import main

main()
