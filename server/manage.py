#!/usr/bin/env python
import os
import sys


def main():
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "settings")
    from django.conf import settings
    from django.core.management import execute_from_command_line

    argv = list(sys.argv)
    # `manage.py runserver` with no address listens on PORT
    if len(argv) == 2 and argv[1] == "runserver":
        argv.append(str(settings.PORT))
    execute_from_command_line(argv)


if __name__ == "__main__":
    main()
