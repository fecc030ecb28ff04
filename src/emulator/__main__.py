from src.emulator.cli import main

main()
