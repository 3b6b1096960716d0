"""附件处理：文本抽取、文档解析与按 Provider 形态的内容适配。"""
