from ais_relay.main import main

main()
