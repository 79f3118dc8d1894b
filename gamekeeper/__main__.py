from .supervisor.__main__ import main

main()
