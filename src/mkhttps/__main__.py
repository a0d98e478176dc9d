from mkhttps.cli import main

main()
