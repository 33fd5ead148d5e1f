from dokan_sync.cli import main

main()
