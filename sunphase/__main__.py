from sunphase.main import main

main()
