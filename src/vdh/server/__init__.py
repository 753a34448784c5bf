"""Unix-socket control server and the command protocol it speaks."""
