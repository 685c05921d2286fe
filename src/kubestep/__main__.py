from kubestep.cli import main

main()
