from .util import helper


class App:
    def run(self):
        return helper()


def main():
    App().run()
