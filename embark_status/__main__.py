from embark_status.app import main

main()
