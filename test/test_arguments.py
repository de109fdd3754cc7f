import unittest
from clformat import ArgumentExhausted, FormatConfig, InvalidArgumentType
from clformat import Arguments

class ArgumentsTest(unittest.TestCase):
    def testNextAndPeek(self):
        args = Arguments([1, 2, 3])
        self.assertEqual(3, len(args))
        self.assertEqual(1, args.peek())
        self.assertEqual(1, args.next())
        self.assertEqual(2, args.peek())
        self.assertEqual(1, args.peek(-1))
        self.assertIsNone(args.peek(5))
        self.assertIsNone(args.peek(-5))
        self.assertEqual(2, args.remaining)
        self.assertFalse(args.empty)

    def testExhaustion(self):
        args = Arguments(["a"])
        args.next()
        self.assertTrue(args.empty)
        self.assertIsNone(args.peek())
        with self.assertRaises(ArgumentExhausted) as cm:
            args.next()
        self.assertIs(args, cm.exception.arguments)
        self.assertEqual(1, args.cur)

        self.assertRaises(ArgumentExhausted, Arguments([]).next)

    def testJumpClamps(self):
        args = Arguments([1, 2, 3])
        args.jump(10)
        self.assertEqual(3, args.cur)
        self.assertEqual(0, args.remaining)
        self.assertTrue(args.empty)
        args.jump(-10)
        self.assertEqual(0, args.cur)
        self.assertFalse(args.empty)
        args.jump(2)
        self.assertEqual(3, args.next())
        args.jump(-1)
        self.assertEqual(3, args.next())

    def testGotoClamps(self):
        args = Arguments([1, 2, 3])
        args.goto(2)
        self.assertEqual(1, args.remaining)
        args.goto(-4)
        self.assertEqual(0, args.cur)
        args.goto(99)
        self.assertEqual(3, args.cur)

    def testNested(self):
        config = FormatConfig(commachar=".")
        args = Arguments([[1, 2], "x"], config=config)
        inner = args.nested(args.next(), args)
        self.assertIs(args, inner.outer)
        self.assertIs(config, inner.config)
        self.assertEqual([1, 2], list(inner.args))
        self.assertRaises(InvalidArgumentType, args.nested, args.next())

    def testDefaultConfig(self):
        args = Arguments(())
        self.assertEqual(",", args.config.commachar)
        self.assertEqual(3, args.config.comma_interval)
        self.assertIsNone(args.config.line_length)

if __name__ == "__main__":
    unittest.main()
