"""
a command-line interface to the PLN depositor.  The :py:func:`main` function provides the
implementation.

Sub-commands:

``run``
    execute one deposit pass over all (or selected) tenants
``status``
    list the deposits and their status
``reset``
    reset deposits so that they are repackaged and retransferred on the next run
"""
import argparse, sys, os, re, logging
from argparse import ArgumentParser

import yaml

from . import config, PLNException, ConfigurationException
from .depositor import Depositor

prog = re.sub(r'\.py$', '', os.path.basename(sys.argv[0]))

class Failure(Exception):
    """
    an exception indicating that the command failed; the program should exit with the
    status given by ``exitcode``.
    """
    def __init__(self, message, exitcode=1, cause=None):
        super(Failure, self).__init__(message)
        self.exitcode = exitcode
        self.cause = cause

def define_options(progname):
    """
    return an ArgumentParser instance that is configured with options
    for the command-line interface.
    """
    description = "Package published content and deposit it into a Private LOCKSS Network"
    epilog = None

    parser = ArgumentParser(progname, None, description, epilog)

    parser.add_argument('-c', '--config-file', type=str, dest='cfgfile', metavar='FILE',
                        help="a file containing the configuration to use (YAML or JSON)")
    parser.add_argument('-w', '--working-dir', type=str, dest='workdir', metavar='DIR',
                        help="the directory where deposit packages are built; this overrides "+
                             "the 'working_dir' config parameter")
    parser.add_argument('-l', '--logfile', action='store', dest='logfile', type=str, metavar='FILE',
                        help="write messages that normally go to standard error to FILE as well.  "+
                             "If -q is also specified, the messages will only go to the logfile")
    parser.add_argument('-v', '--verbose', action='store_true', dest='verbose',
                        help="print more (debug) messages to standard error and/or the log file")
    parser.add_argument('-q', '--quiet', action='store_true', dest='quiet',
                        help="suppress all error and warning messages to standard error")

    subparsers = parser.add_subparsers(title="commands", dest="cmd", metavar="CMD")

    p = subparsers.add_parser("run", help="execute one deposit pass over the tenants")
    p.add_argument('-t', '--tenant', action='append', dest='tenants', metavar='ID', default=None,
                   help="restrict processing to this tenant (may be repeated)")

    p = subparsers.add_parser("status", help="list deposits and their status")
    p.add_argument('-t', '--tenant', action='store', dest='tenant', metavar='ID',
                   help="list only the deposits of this tenant")

    p = subparsers.add_parser("reset", help="reset deposits so that they are rebuilt")
    p.add_argument('-t', '--tenant', action='store', dest='tenant', metavar='ID', required=True,
                   help="the tenant owning the deposits")
    p.add_argument('ids', metavar='ID', type=int, nargs='+',
                   help="the identifiers of the deposits to reset")

    return parser

def _tenant_id(val):
    # tenant identifiers given on the command line may be integers
    if val is not None and re.match(r'^\d+$', val):
        return int(val)
    return val

def read_config(filepath):
    """
    read the configuration from a file having the given filepath

    :except Failure:  if the contents contains syntax or format errors
    :except IOError:  if a failure occurs while opening or reading the file
    """
    try:
        return config.load_from_file(filepath)
    except (ValueError, yaml.YAMLError) as ex:
        raise Failure("Config parsing error: "+str(ex), 3, ex)

def configure_logging(opts, progname):
    rootlog = logging.getLogger()
    level = (opts.verbose and logging.DEBUG) or logging.INFO
    if opts.logfile:
        config.configure_log(opts.logfile, level,
                             "%(asctime)s " + progname + ".%(name)s %(levelname)s: %(message)s")
    if not opts.quiet:
        fmt = progname + ": %(levelname)s: %(message)s"
        hdlr = logging.StreamHandler(sys.stderr)
        hdlr.setFormatter(logging.Formatter(fmt))
        hdlr.setLevel(logging.DEBUG)
        rootlog.addHandler(hdlr)
    elif not rootlog.handlers:
        rootlog.addHandler(logging.NullHandler())
    rootlog.setLevel(level)

def main(progname, args, depositor=None, out=None):
    """
    execute the requested command

    :param str progname:  the name of the program (used in messages)
    :param list   args:  the command-line arguments
    :param Depositor depositor:  the Depositor to use; if not provided, one is created from the
                          configuration
    :param out:          the file stream to write listings to (default: standard out)
    :raise Failure:  if the command fails
    """
    parser = define_options(progname)
    opts = parser.parse_args(args)
    if not opts.cmd:
        raise Failure("Missing command (use -h for help)", 2)
    if out is None:
        out = sys.stdout

    configure_logging(opts, progname)

    if not depositor:
        cfg = {}
        if opts.cfgfile:
            try:
                cfg = read_config(opts.cfgfile)
            except EnvironmentError as ex:
                raise Failure("problem reading config file, {0}: {1}"
                              .format(opts.cfgfile, ex.strerror)) from ex
        else:
            raise Failure("Unable to locate configuration; use -c")
        if opts.workdir:
            cfg['working_dir'] = opts.workdir

        try:
            depositor = Depositor.from_config(cfg)
        except ConfigurationException as ex:
            raise Failure(str(ex)) from ex

    try:
        if opts.cmd == "run":
            tenants = [_tenant_id(t) for t in opts.tenants] if opts.tenants else None
            report = depositor.run(tenants)
            for res in report.failures:
                out.write("%s: %s: %s\n" % (res.tenant, res.stage, res.error))
            if not report.ok:
                raise Failure("%d stage(s) reported failures" % len(report.failures), 4)

        elif opts.cmd == "status":
            list_deposits(depositor, _tenant_id(opts.tenant), out)

        elif opts.cmd == "reset":
            reset = depositor.reset_deposits(_tenant_id(opts.tenant), opts.ids)
            for dep in reset:
                out.write("reset deposit %s (%s)\n" % (dep.id, dep.uuid))

    except ConfigurationException as ex:
        raise Failure(str(ex)) from ex
    except PLNException as ex:
        raise Failure("PLN depositor failure: "+str(ex), 2) from ex

def list_deposits(depositor, tenant_id, out):
    """
    write a listing of deposits and their status to the given stream
    """
    if tenant_id is None:
        deps = depositor.deposits.find()
    else:
        deps = depositor.deposits.find_by_tenant(tenant_id)
    for dep in deps:
        out.write("%s\t%s\t%s\t%s %s\t%s/%s/%s\t%s\t%s\n" %
                  (dep.id, dep.tenant_id, dep.uuid, dep.object_kind,
                   dep.object_id(depositor.objects) or '-', dep.local_status,
                   dep.processing_status, dep.lockss_status, dep.displayed_status,
                   dep.export_error or ''))
