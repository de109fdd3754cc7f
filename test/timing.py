import timeit

setup = """
from clformat import Formatter, format, parse_control_string

null = open("/dev/null", "w")
lister = "~{~D~^, ~}"
animals = "~{~d ~a~2:*~p~*~#[~;~;, and ~:;, ~]~}"
preparsed = Formatter(animals)
l = tuple(range(1000))
zoo = [12, "cat", 1, "bird", 3, "dog"] * 100
"""[1:]
stmts = (("parse", """tuple(parse_control_string(animals))"""),
         ("format", """format(null, "~~foo: ~D pon~:@P~%", 3)"""),
         ("iteration", """format(null, lister, l)"""),
         ("unparsed", """format(null, animals, zoo)"""),
         ("preparsed", """format(null, preparsed, zoo)"""),
         ("english", """format(null, "~R ~:R ~@R", 1234567, 89, 1999)"""))
for name, stmt in stmts:
    print(">> %s" % name)
    timeit.main(["-s", setup, stmt])
    print()
