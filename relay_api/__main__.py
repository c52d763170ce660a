from relay_api.api import main

main()
